import os
import psycopg2
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DB_HOST = os.getenv('DB_HOST')
DB_NAME = os.getenv('DB_NAME')
DB_USER = os.getenv('DB_USER')
DB_PASS = os.getenv('DB_PASSWORD')
DB_PORT = os.getenv('DB_PORT', 5432)
DB_SCHEMA = os.getenv('DB_SCHEMA', 'ostrich')

def get_db_connection():
    """
    Opens a new database connection with the game schema first on the
    search path and the session timezone pinned to UTC.
    Returns None when the database is unreachable.
    """
    try:
        conn = psycopg2.connect(
            dbname=DB_NAME,
            user=DB_USER,
            password=DB_PASS,
            host=DB_HOST,
            port=DB_PORT,
            options=f"-c search_path={DB_SCHEMA},public -c timezone=UTC"
        )
        return conn
    except psycopg2.Error as e:
        print(f"Error: Could not connect to the database. {e}")
        return None

# A simple connectivity check you can run
if __name__ == '__main__':
    conn = get_db_connection()
    if conn:
        print("Database connection successful!")
        conn.close()
    else:
        print("Database connection failed.")
