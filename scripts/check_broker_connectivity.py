"""
============================================================================
Evaluation Desk v1.0.0
Broker Connectivity Check - Nelogica API Verification
============================================================================

Reliability Level: DEVELOPMENT/TESTING
Input Constraints: Requires .env configuration (BROKER_* variables)
Side Effects: Login, environment and risk profile listing on Nelogica

PURPOSE
-------
Verify the broker credentials and show what the desk will provision
against: available environments and the risk profiles of the configured
environment, checked against the plan catalog.

EXECUTION
---------
    python scripts/check_broker_connectivity.py

============================================================================
"""

import sys
import asyncio
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load environment
load_dotenv()

from app.broker.nelogica_client import BrokerClientError, NelogicaApiClient
from services.desk_config import DeskConfig, DeskConfigurationError
from services.plan_catalog import PLAN_PROFILES


async def main() -> int:
    print("=" * 60)
    print("EVALUATION DESK v1.0.0 - BROKER CONNECTIVITY CHECK")
    print("=" * 60)

    config = DeskConfig.from_env()
    if not config.broker.username or not config.broker.password:
        print("\n❌ BROKER_USERNAME and BROKER_PASSWORD must be set")
        return 1

    async with NelogicaApiClient(
        base_url=config.broker.api_url,
        username=config.broker.username,
        password=config.broker.password,
        timeout=config.broker.request_timeout_seconds,
    ) as client:
        try:
            token = await client.login()
            print(f"\n✅ Login OK | token expires {token.expires_at.isoformat()}")

            environments = await client.list_environments()
            print(f"\n🌐 ENVIRONMENTS ({len(environments)})")
            print("-" * 60)
            for env in environments:
                marker = "*" if env.environment_id == config.broker.environment_id else " "
                print(f" {marker} {env.environment_id}  {env.name}  test={env.is_test}")

            if not config.broker.environment_id:
                print("\n⚠️  BROKER_ENVIRONMENT_ID not set, skipping risk profiles")
                return 0

            profiles = await client.list_risk_profiles(config.broker.environment_id)
            known = {profile.profile_id for profile in profiles}
            print(f"\n📋 RISK PROFILES ({len(profiles)})")
            print("-" * 60)
            for profile in profiles:
                print(
                    f"   {profile.profile_id}  balance={profile.initial_balance}  "
                    f"loss={profile.loss_rule}  gain={profile.gain_rule}"
                )

            print("\n🔗 PLAN CATALOG")
            print("-" * 60)
            missing = 0
            for plan, profile_id in PLAN_PROFILES.items():
                found = profile_id in known
                missing += 0 if found else 1
                print(f"   {'✅' if found else '❌'} {plan:<10} {profile_id}")
        except (BrokerClientError, DeskConfigurationError) as e:
            print(f"\n❌ ERROR: {e}")
            print("=" * 60)
            return 1

    print("\n" + ("✅ CONNECTIVITY CHECK COMPLETE" if not missing else
                  f"⚠️  {missing} plan(s) reference unknown profiles"))
    print("=" * 60)
    return 0 if not missing else 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
