from ostrich_races.database.connection import get_db_connection
from ostrich_races.config import get_money
from ostrich_races.bot_bettors import BotStats
from ostrich_races.session import PlayerStats
from decimal import Decimal
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import psycopg2
import psycopg2.extras as pg_extras

STARTING_BANKROLL = get_money('economy.starting_bankroll', 1000000)

# --- Players ---

def get_player(player_id: str) -> Optional[Dict[str, Any]]:
    """
    Fetches a player's bankroll and lifetime stats.

    Returns:
        dict: {"player_id", "bankroll" (Decimal), "stats" (PlayerStats)}
              or None if the player is unknown or the lookup failed.
    """
    conn = None
    record = None
    try:
        conn = get_db_connection()
        if conn is None:
            return None
        with conn.cursor() as cur:
            cur.execute(
                "SELECT player_id, bankroll, stats FROM players WHERE player_id = %s;",
                (str(player_id),)
            )
            row = cur.fetchone()
            if row:
                record = {
                    "player_id": row[0],
                    "bankroll": Decimal(str(row[1])),
                    "stats": PlayerStats.from_dict(row[2]),
                }
    except psycopg2.Error as e:
        print(f"Error in get_player for {player_id}: {e}")
    finally:
        if conn:
            conn.close()
    return record

def ensure_player(player_id: str, starting_bankroll: Optional[Decimal] = None) -> Dict[str, Any]:
    """
    Returns the stored player, creating a row with the starting bankroll if needed.
    Falls back to an unsaved default record when the database is unavailable.
    """
    existing = get_player(player_id)
    if existing:
        return existing

    bankroll = STARTING_BANKROLL if starting_bankroll is None else Decimal(str(starting_bankroll))
    stats = PlayerStats()
    conn = None
    try:
        conn = get_db_connection()
        if conn is not None:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO players (player_id, bankroll, stats)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (player_id) DO NOTHING;
                    """,
                    (str(player_id), bankroll, pg_extras.Json(stats.to_dict()))
                )
            conn.commit()
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error creating player {player_id}: {e}")
    finally:
        if conn:
            conn.close()
    return {"player_id": str(player_id), "bankroll": bankroll, "stats": stats}

def save_player(player_id: str, bankroll: Decimal, stats: PlayerStats) -> bool:
    conn = None
    try:
        conn = get_db_connection()
        if conn is None:
            return False
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO players (player_id, bankroll, stats)
                VALUES (%s, %s, %s)
                ON CONFLICT (player_id)
                DO UPDATE SET bankroll = EXCLUDED.bankroll,
                              stats = EXCLUDED.stats,
                              updated_at = NOW();
                """,
                (str(player_id), bankroll, pg_extras.Json(stats.to_dict()))
            )
        conn.commit()
        return True
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error saving player {player_id}: {e}")
        return False
    finally:
        if conn:
            conn.close()

# --- Bot stats ---

def get_bot_stats(bot_id: str) -> BotStats:
    conn = None
    stats = BotStats()
    try:
        conn = get_db_connection()
        if conn is None:
            return stats
        with conn.cursor() as cur:
            cur.execute("SELECT stats FROM bot_stats WHERE bot_id = %s;", (bot_id,))
            row = cur.fetchone()
            if row:
                stats = BotStats.from_dict(row[0])
    except psycopg2.Error as e:
        print(f"Error loading bot stats for {bot_id}: {e}")
    finally:
        if conn:
            conn.close()
    return stats

def save_bot_stats(bot_id: str, stats: BotStats) -> bool:
    conn = None
    try:
        conn = get_db_connection()
        if conn is None:
            return False
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO bot_stats (bot_id, stats)
                VALUES (%s, %s)
                ON CONFLICT (bot_id)
                DO UPDATE SET stats = EXCLUDED.stats, updated_at = NOW();
                """,
                (bot_id, pg_extras.Json(stats.to_dict()))
            )
        conn.commit()
        return True
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error saving bot stats for {bot_id}: {e}")
        return False
    finally:
        if conn:
            conn.close()

# --- Races and settlements ---

def record_race(race_id: str, seed: Optional[int], parameters: Dict[str, Any]) -> bool:
    """
    Stores the serialized race parameters so the race can be replayed later.
    """
    conn = None
    try:
        conn = get_db_connection()
        if conn is None:
            return False
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO races (race_id, seed, parameters)
                VALUES (%s, %s, %s)
                ON CONFLICT (race_id) DO UPDATE SET parameters = EXCLUDED.parameters;
                """,
                (race_id, seed, pg_extras.Json(parameters))
            )
        conn.commit()
        return True
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error recording race {race_id}: {e}")
        return False
    finally:
        if conn:
            conn.close()

def record_settlement(race_id: str, player_id: str, settlement) -> bool:
    """
    Writes the finishing order and the player's settlement in one transaction.
    """
    conn = None
    try:
        conn = get_db_connection()
        if conn is None:
            return False
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE races
                SET finish_order = %s, desync = %s, settled_at = NOW()
                WHERE race_id = %s;
                """,
                (list(settlement.order), settlement.desync, race_id)
            )
            cur.execute(
                """
                INSERT INTO settlements (race_id, player_id, staked, winnings)
                VALUES (%s, %s, %s, %s);
                """,
                (race_id, str(player_id), settlement.total_staked, settlement.total_winnings)
            )
        conn.commit()
        return True
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        print(f"Error recording settlement for race {race_id}, player {player_id}: {e}")
        return False
    finally:
        if conn:
            conn.close()

def get_recent_settlements(player_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    """
    Returns the player's latest settlements, newest first, with UTC timestamps.
    """
    if limit <= 0:
        return []
    conn = None
    rows = []
    try:
        conn = get_db_connection()
        if conn is None:
            return []
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.race_id, r.finish_order, s.staked, s.winnings, s.created_at
                FROM settlements s
                JOIN races r ON r.race_id = s.race_id
                WHERE s.player_id = %s
                ORDER BY s.created_at DESC
                LIMIT %s;
                """,
                (str(player_id), limit)
            )
            rows = cur.fetchall()
    except psycopg2.Error as e:
        print(f"Error in get_recent_settlements for {player_id}: {e}")
    finally:
        if conn:
            conn.close()

    recent = []
    for race_id, finish_order, staked, winnings, created_at in rows:
        staked_dec = Decimal(str(staked))
        winnings_dec = Decimal(str(winnings))
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        recent.append({
            "race_id": race_id,
            "finish_order": list(finish_order or []),
            "staked": staked_dec,
            "winnings": winnings_dec,
            "profit": winnings_dec - staked_dec,
            "created_at": created_at,
        })
    return recent
