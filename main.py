#!/usr/bin/env python3
"""
Main entry point for the web crawler.
"""

import sys

from webspider.app import main


if __name__ == '__main__':
    sys.exit(main())
