#!/usr/bin/env python3
"""
Startup script for the clinic booking backend.
Runs the API server, checks the environment, and performs maintenance tasks.
"""

import os
import sys
import asyncio
import argparse
import getpass
import subprocess
from pathlib import Path


def run_api():
    """Run the FastAPI server"""
    print("🚀 Starting FastAPI server...")
    cmd = [sys.executable, "-u", "-m", "uvicorn", "api.main:app", "--host", "0.0.0.0", "--port", "8000", "--reload"]
    env = os.environ.copy()
    env["PYTHONUNBUFFERED"] = "1"
    return subprocess.Popen(
        cmd,
        cwd=Path(__file__).parent,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
        env=env
    )


def check_environment():
    """Check if required environment variables are set"""
    required_vars = [
        "MONGODB_URI",
        "SECRET_KEY",
    ]
    optional_vars = [
        "LIVEKIT_URL",
        "LIVEKIT_API_KEY",
        "LIVEKIT_API_SECRET",
    ]

    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        print("❌ Missing required environment variables:")
        for var in missing_vars:
            print(f"   - {var}")
        print("\n💡 Please check your .env.local file")
        return False

    missing_optional = [var for var in optional_vars if not os.getenv(var)]
    if missing_optional:
        print("⚠️  Video consultations disabled, missing: " + ", ".join(missing_optional))

    print("✅ Environment variables configured")
    return True


def check_dependencies():
    """Check if required dependencies are installed"""
    try:
        import fastapi
        import motor
        import jose
        import livekit.api
        print("✅ Dependencies installed")
        return True
    except ImportError as e:
        print(f"❌ Missing dependency: {e}")
        print("💡 Run: pip install -e .")
        return False


async def rebuild_schedules():
    """Recompute provider and patient schedule claims from stored appointments"""
    from core.database import DatabaseManager

    db = DatabaseManager()
    try:
        count = await db.rebuild_schedules()
        print(f"✅ Rebuilt schedules from {count} appointments")
    finally:
        await db.close()


async def create_admin(email, first_name, last_name, password):
    """Create a provider (admin) account"""
    from core.database import DatabaseManager
    from core.models import Role
    from core.users import register_user

    db = DatabaseManager()
    try:
        user = await register_user(db, email, password, first_name, last_name, role=Role.ADMIN)
        print(f"✅ Admin created: {user['email']} ({user['_id']})")
    finally:
        await db.close()


def main():
    parser = argparse.ArgumentParser(description="Clinic Booking Backend Startup Script")
    parser.add_argument(
        "command",
        choices=["api", "check", "rebuild-schedules", "create-admin"],
        help="What to run: api, check environment, rebuild schedules, or create an admin"
    )
    parser.add_argument("--email", help="Admin email (create-admin)")
    parser.add_argument("--first-name", default="Clinic", help="Admin first name (create-admin)")
    parser.add_argument("--last-name", default="Admin", help="Admin last name (create-admin)")

    args = parser.parse_args()

    # Load environment variables
    from dotenv import load_dotenv
    load_dotenv(".env.local")

    if args.command == "check":
        print("🔍 Checking system requirements...")
        env_ok = check_environment()
        deps_ok = check_dependencies()

        if env_ok and deps_ok:
            print("✅ System ready!")
            return 0
        else:
            print("❌ System not ready")
            return 1

    if not check_environment() or not check_dependencies():
        return 1

    if args.command == "rebuild-schedules":
        asyncio.run(rebuild_schedules())
        return 0

    if args.command == "create-admin":
        if not args.email:
            print("❌ --email is required")
            return 1
        password = getpass.getpass("Password: ")
        asyncio.run(create_admin(args.email, args.first_name, args.last_name, password))
        return 0

    process = run_api()
    try:
        print("✅ API server starting... (logs below)\n")
        # Stream output in real-time
        for line in iter(process.stdout.readline, ''):
            if not line:
                break
            print(line.rstrip())

        # Wait for process to complete
        return_code = process.wait()
        if return_code != 0:
            print(f"\n❌ API server exited with code {return_code}")
            return 1
    except KeyboardInterrupt:
        print("\n🛑 Stopping API server...")
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    return 0


if __name__ == "__main__":
    sys.exit(main())
