#!/usr/bin/env python3
"""
Test script for Innersync login and token caching.

Logs in with the credentials from .env and checks that the token lands in
the cache file.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
from innersync.api_clients import login_for_token
from innersync.auth import TokenCache
from innersync.utils.logging import setup_logging


async def test_login_flow():
    """Test the login flow against the configured API."""
    # Load environment variables
    load_dotenv()

    # Setup logging
    setup_logging(log_level="INFO", log_format="console")

    email = os.getenv("INNERSYNC_LOGIN_EMAIL")
    password = os.getenv("INNERSYNC_LOGIN_PASSWORD")
    api_base_url = os.getenv("INNERSYNC_API_BASE_URL")
    cache_path = os.getenv("INNERSYNC_TOKEN_CACHE_PATH", "./data/.cache/token.json")

    if not email or not password:
        print("Error: Please set INNERSYNC_LOGIN_EMAIL and INNERSYNC_LOGIN_PASSWORD in your .env file")
        return False

    print("Starting Innersync login test...")
    print(f"Email: {email}")

    try:
        token = await login_for_token(
            api_base_url,
            {"email": email, "password": password},
            token_cache_path=cache_path
        )
        if not token:
            print("❌ Server did not return a token")
            return False

        print("✅ Successfully obtained API token!")
        print(f"Token (first 8 chars): {token[:8]}...")

        print("\nChecking token cache...")
        cached = TokenCache(cache_path).read()
        if cached != token:
            print(f"❌ Token cache at {cache_path} does not hold the new token")
            return False

        print(f"✅ Token cached at {cache_path}")
        return True

    except Exception as e:
        print(f"❌ Login test failed: {e}")
        return False


if __name__ == "__main__":
    success = asyncio.run(test_login_flow())
    sys.exit(0 if success else 1)
