#!/usr/bin/env python3
"""
Simulation relay - Main runner script

Usage:
    python run.py                          # Run with defaults from config/config.yaml
    python run.py --config my.yaml         # Use another config file
    python run.py --port 9000              # Override the listen port
    python run.py --log-level debug        # Verbose logging
"""

from simrelay.server import main

if __name__ == "__main__":
    main()
