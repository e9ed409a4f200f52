"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import load_config, SettingsError

def main():
    """Display loaded configuration"""
    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# Database holding the assets/transfers projection
db_url = postgresql://root@localhost:26257/switchassets?sslmode=disable
# Ledger node endpoints
rpc_url = https://sepolia.base.org
ws_url = wss://base-sepolia.example/ws
# SwitchAssets contract
contract_address = 0x3897196da6a4f2219ed4f183afa3a10c8c227f23
# Sync policy
history_window = 1000
max_block_range = 499
retry_delay = 5
rpc_timeout = 10
persist_cursor = true
# Analytics outputs
analytics_json_path = files/analytics.json
analytics_summary_path = files/summary.md
""")

    try:
        settings = load_config()
    except SettingsError as e:
        print(f"\n{e}")
        return

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.items():
        print(f"{key}: {value}")

if __name__ == "__main__":
    main()
