#!/usr/bin/env python3
"""Check the .env file and the settings the tracking service needs."""

from pathlib import Path
import sys

TEMPLATE = """# Supabase (load store, depots, custom locations)
FLEET_SUPABASE_URL=https://your-project-id.supabase.co
FLEET_SUPABASE_KEY=your-service-role-key-here

# Telematics provider
FLEET_TELEMATICS_USERNAME=
FLEET_TELEMATICS_PASSWORD=
# FLEET_TELEMATICS_ORGANISATION_ID=1234

# Depot workbook used when the depots table is empty
FLEET_DEPOTS_FILE=./data/depots.xlsx

# Tracking loop
FLEET_POLL_INTERVAL_SECONDS=30
FLEET_DWELL_THRESHOLD_MINUTES=5
# FLEET_LOCAL_TIMEZONE=Africa/Johannesburg

# Road distance for ETAs (optional)
# FLEET_OSRM_BASE_URL=http://localhost:5000
"""

SECRET_KEYS = ("FLEET_SUPABASE_KEY", "FLEET_TELEMATICS_PASSWORD")


def _mask(line: str) -> str:
    name, _, value = line.partition("=")
    if name.strip() in SECRET_KEYS and len(value.strip()) > 8:
        return f"{name}={value.strip()[:4]}...{value.strip()[-4:]}"
    return line


def main() -> int:
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    if not env_file.exists():
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"Created template .env at {env_file}; fill in the credentials and run again.")
        return 1

    print(f"Found .env at {env_file}:")
    for line in env_file.read_text(encoding="utf-8").splitlines():
        print(f"  {_mask(line)}")
    print()

    sys.path.insert(0, str(project_root / "src"))
    try:
        from fleet_tracker.config import settings
    except Exception as e:
        print(f"Error loading config: {e}")
        return 1

    checks = {
        "Supabase URL": settings.supabase_url,
        "Supabase key": settings.supabase_key,
        "Telematics username": settings.telematics_username,
        "Telematics password": settings.telematics_password,
    }
    missing = [label for label, value in checks.items() if not value]
    for label, value in checks.items():
        print(f"{'OK     ' if value else 'MISSING'} {label}")
    print(f"Depot workbook: {settings.depots_file} ({'found' if settings.depots_file.exists() else 'not found'})")
    print(f"Poll interval: {settings.poll_interval_seconds:.0f}s, dwell threshold: {settings.dwell_threshold_minutes:g} min")

    if missing:
        print(f"\nNot configured: {', '.join(missing)}. Variables need the FLEET_ prefix.")
        return 1
    print("\nTracking service is configured.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
