#!/usr/bin/env python3
"""Check which Redis settings the session registry will use."""
import os
import sys
from pathlib import Path

# Add the project root to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from media_ingest.config import settings
from media_ingest.core.config import ENV_PREFIX
from media_ingest.services.redis_service import DEFAULT_REDIS_URL


def check_redis_config():
    """Print the effective Redis configuration."""
    print("=" * 60)
    print("Redis configuration check")
    print("=" * 60)

    print(f"\n1. Session backend: {settings.session_backend}")
    if settings.session_backend != "redis":
        print(f"   ! Sessions are kept in memory; set {ENV_PREFIX}SESSION_BACKEND=redis to use Redis")

    print("\n2. Environment variables:")
    for name in ("REDIS_URL", "REDIS_HOST", "REDIS_PORT"):
        env_key = f"{ENV_PREFIX}{name}"
        print(f"   {env_key}: {os.getenv(env_key) or 'not set'}")

    print("\n3. Effective settings:")
    print(f"   redis_url: {settings.redis_url.split('@')[-1]}")
    print(f"   redis_host: {settings.redis_host}")
    print(f"   redis_port: {settings.redis_port}")
    print(f"   redis_db: {settings.redis_db}")
    print(f"   redis_password: {'set' if settings.redis_password else 'not set'}")
    print(f"   redis_key_prefix: {settings.redis_key_prefix}")
    print(f"   session lock: timeout={settings.redis_session_lock_timeout}s, "
          f"wait={settings.redis_session_lock_wait_timeout}s")

    print("\n4. .env.dev file:")
    env_file = project_root / ".env.dev"
    if env_file.exists():
        print(f"   found: {env_file}")
        with open(env_file, 'r', encoding='utf-8') as f:
            redis_lines = [line.strip() for line in f if line.strip().startswith(f"{ENV_PREFIX}REDIS")]
        for line in redis_lines:
            if 'PASSWORD' in line and '=' in line:
                key, value = line.split('=', 1)
                print(f"     {key}=***" if value.strip() else f"     {line}")
            else:
                print(f"     {line}")
        if not redis_lines:
            print("   ! no Redis entries found")
    else:
        print(f"   not found: {env_file}")

    print("\n5. Connection mode:")
    redis_url_value = settings.redis_url.strip() if settings.redis_url else ""
    use_url = bool(redis_url_value and redis_url_value != DEFAULT_REDIS_URL)
    if use_url:
        print(f"   URL: {redis_url_value.split('@')[-1]}")
    else:
        print(f"   host/port: {settings.redis_host}:{settings.redis_port}")
        if not use_url and settings.redis_host != "localhost":
            print(f"   Tip: set {ENV_PREFIX}REDIS_URL to connect to a remote server:")
            auth = ":***@" if settings.redis_password else ""
            print(f"      {ENV_PREFIX}REDIS_URL=redis://{auth}{settings.redis_host}:{settings.redis_port}/{settings.redis_db}")

    print("\n" + "=" * 60)


if __name__ == "__main__":
    try:
        check_redis_config()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
