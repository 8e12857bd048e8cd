#!/usr/bin/env python3
"""Web API entry point for the tool agent sandbox."""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from agent.config import load_config
from agent.log import configure_logging
from web.app import create_app


def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.json"
    config = load_config(config_path)
    configure_logging(config.log_dir, config.log_level)

    print(f"\n  Tool Agent Sandbox - Web API")
    print(f"  Chat model: {config.chat_model.model_name}")
    print(f"  Endpoint: {config.chat_model.base_url}")
    print(f"  POST http://localhost:5000/api/chat\n")

    app = create_app(config)
    app.run(host="127.0.0.1", port=5000, debug=False, threaded=True)


if __name__ == "__main__":
    main()
