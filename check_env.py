#!/usr/bin/env python3
"""Helper script to check and create the .env file for the dispatch service."""

from pathlib import Path
import os
import sys

TEMPLATE = """# Dispatch provider (required)
RIDE_PROVIDER_BASE_URL=https://ca2.gootax.pro:8089
RIDE_PROVIDER_APP_ID=
RIDE_PROVIDER_TENANT_ID=
RIDE_PROVIDER_DISPATCHER_ID=
RIDE_PROVIDER_SECRET=

# Queue and geocode cache
RIDE_REDIS_URL=redis://localhost:6379/0
RIDE_DISPATCH_RATE_LIMIT=50
RIDE_DISPATCH_LEASE_SECONDS=30

# Geocoder
RIDE_GEOCODER_API_KEY=

# Opera PMS (optional - leave empty to disable CRM updates)
RIDE_OPERA_API_URL=
RIDE_OPERA_API_TOKEN=

# Notifications (optional)
RIDE_SMS_GATEWAY_URL=
RIDE_SMS_API_KEY=
RIDE_SMTP_HOST=
RIDE_SMTP_USER=
RIDE_SMTP_PASSWORD=

# Supabase order log (optional)
RIDE_SUPABASE_URL=https://your-project-id.supabase.co
RIDE_SUPABASE_KEY=your-service-role-key-here
"""

REQUIRED = ("provider_app_id", "provider_tenant_id", "provider_dispatcher_id", "provider_secret", "redis_url")
OPTIONAL = (
    "geocoder_api_key",
    "opera_api_url",
    "opera_api_token",
    "sms_gateway_url",
    "smtp_host",
    "supabase_url",
    "supabase_key",
)
SECRET_MARKERS = ("SECRET", "KEY", "TOKEN", "PASSWORD")


def _mask(value: str) -> str:
    if len(value) > 20:
        return value[:6] + "..." + value[-4:]
    return "***"


def _print_env_file(env_file: Path) -> None:
    print("Current contents:")
    print("-" * 60)
    for line in env_file.read_text(encoding="utf-8").splitlines():
        name, sep, value = line.partition("=")
        if sep and value.strip() and any(marker in name for marker in SECRET_MARKERS):
            print(f"{name}={_mask(value.strip())}")
        else:
            print(line)
    print("-" * 60)
    print()


def main():
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("Ride Dispatch Environment Checker")
    print("=" * 60)
    print()

    if env_file.exists():
        print(f"✅ Found .env file at: {env_file}")
        print()
        _print_env_file(env_file)
    else:
        print(f"❌ .env file NOT found at: {env_file}")
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"✅ Created template .env file at: {env_file}")
        print("⚠️  Please fill in the provider credentials before starting the server!")
        return

    try:
        sys.path.insert(0, str(project_root / "src"))
        from ridedispatch.config import settings
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        print("Make sure you're running this from the project root directory")
        return

    missing = []
    for name in REQUIRED:
        if getattr(settings, name):
            print(f"✅ RIDE_{name.upper()} is set")
        else:
            print(f"❌ RIDE_{name.upper()} is missing")
            missing.append(name)
    for name in OPTIONAL:
        state = "set" if getattr(settings, name) else "not set (feature disabled)"
        print(f"   RIDE_{name.upper()}: {state}")
    print()

    if os.getenv("RIDE_PROVIDER_SECRET") is None and settings.provider_secret:
        print("ℹ️  Provider secret loaded from .env, not the process environment")

    print("=" * 60)
    if missing:
        print("❌ ERROR: required dispatch settings are missing")
    else:
        print("✅ SUCCESS: dispatch service is configured")
    print("=" * 60)


if __name__ == "__main__":
    main()
