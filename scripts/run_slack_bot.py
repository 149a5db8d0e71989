#!/usr/bin/env python3
"""Run the Warm Intro Slack bot in Socket Mode."""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from warmintro.slack_bot import start

if __name__ == "__main__":
    start()
