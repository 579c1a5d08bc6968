import getpass
import os

import psycopg2
from passlib.hash import bcrypt
from dotenv import load_dotenv

from .user_directory import USER_ROLE_VALUES

load_dotenv()

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "callcenter_db"),
    user=os.getenv("DB_USER", "callcenter_user"),
    password=os.getenv("DB_PASSWORD", "callcenter_pass"),
)


def create_user(conn, *, email: str, name: str, role: str, password: str) -> bool:
    """Insert a user; returns ``False`` when the email is already registered."""

    if role not in USER_ROLE_VALUES:
        raise ValueError(f"role must be one of {sorted(USER_ROLE_VALUES)}")
    if len(password) < 8:
        raise ValueError("password must be at least 8 characters")

    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO users (email, name, role, password_hash)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING id
            """,
            (email.strip().lower(), name.strip() or None, role, bcrypt.hash(password)),
        )
        created = cur.fetchone() is not None
    conn.commit()
    return created


def main():
    email = input("Email: ").strip()
    name = input("Name: ").strip()
    role = input("Role (customer/employee/admin) [employee]: ").strip() or "employee"
    password = getpass.getpass("Password: ")

    conn = psycopg2.connect(**DB_CFG)
    try:
        created = create_user(conn, email=email, name=name, role=role, password=password)
    finally:
        conn.close()
    print("Done." if created else "Done. (Email already registered; user unchanged.)")

if __name__ == "__main__":
    main()
