import os
import psycopg2
from ostrich_races.database.connection import get_db_connection

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'ostrich_races', 'database', 'schema.sql')

def initialize_database():
    """
    Reads schema.sql and executes it to create the database tables.
    This is a RESET script: it drops the 'ostrich' schema if it exists
    and creates it fresh.
    """
    try:
        with open(SCHEMA_PATH, 'r') as f:
            sql_commands = f.read()
    except FileNotFoundError:
        print("Error: schema.sql not found. Make sure it's in ostrich_races/database/")
        return

    conn = None
    try:
        conn = get_db_connection()
        if conn is None:
            print("Failed to get database connection.")
            return

        # --- Step 1: Drop the old schema ---
        # DROP SCHEMA can't run inside a transaction block.
        conn.autocommit = True
        with conn.cursor() as cur:
            print("Dropping existing 'ostrich' schema (if it exists)...")
            cur.execute("DROP SCHEMA IF EXISTS ostrich CASCADE;")
            print("'ostrich' schema dropped.")
        # Turn autocommit back off to run the rest as a transaction
        conn.autocommit = False

        # --- Step 2: Create the ostrich schema and tables ---
        with conn.cursor() as cur:
            print("Creating new 'ostrich' schema and tables...")
            cur.execute(sql_commands)
            print("Database tables created successfully!")

        # Once the 'with' block is done, commit the transaction
        conn.commit()
        print("All changes committed to the database.")

    except psycopg2.Error as e:
        if conn:
            conn.rollback()
            print("An error occurred. Transaction rolled back.")
        print(f"Error details: {e}")
    finally:
        if conn:
            conn.close()
            print("Database connection closed.")

if __name__ == '__main__':
    print("This script will RESET your 'ostrich' database schema.")
    print("WARNING: All existing players, races and settlements will be WIPED.")
    response = input("Are you sure you want to continue? (y/n): ")

    if response.lower() == 'y':
        initialize_database()
    else:
        print("Database initialization cancelled.")
