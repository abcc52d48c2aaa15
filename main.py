#!/usr/bin/env python3
"""
Discord Evaluation Runner - Main Entry Point

Runs the Discord bot that lets learners take timed evaluations served by
the evaluation backend.

Usage:
    python main.py [path/to/config.json]

Environment Variables:
    DISCORD_BOT_TOKEN: Your Discord bot token (overrides config.json)
    EVALRUNNER_API_URL: Evaluation backend base URL (overrides api.base_url)
"""

import asyncio
import sys
import os
import json
import logging
from pathlib import Path


def load_config(path="config.json"):
    """Load configuration from a JSON file."""
    config_path = Path(path)

    if not config_path.exists():
        print(f"❌ Error: {config_path} not found!")
        print("Copy config.example.json to config.json and fill in your settings.")
        sys.exit(1)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)

    api_url = os.getenv('EVALRUNNER_API_URL')
    if api_url:
        config.setdefault('api', {})['base_url'] = api_url
    return config


def get_bot_token(config):
    """Get bot token from environment variable or config file."""
    # Environment variable takes precedence
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
        print("❌ Error: Discord bot token not configured!")
        print("Either:")
        print("  1. Set DISCORD_BOT_TOKEN environment variable")
        print("  2. Update the 'token' field in config.json")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "runner.log", encoding='utf-8')
        ]
    )

    # Library loggers are noisy at INFO
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


async def run_bot_with_config(config_path="config.json"):
    """Run the bot with configuration."""
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from evalrunner.bot import run_bot
    await run_bot(token, config)


if __name__ == "__main__":
    try:
        print("🤖 Starting Discord Evaluation Runner...")
        asyncio.run(run_bot_with_config(sys.argv[1] if len(sys.argv) > 1 else "config.json"))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except Exception as e:
        print(f"❌ Failed to start bot: {e}")
        sys.exit(1)
