"""Unified command-line interface for chainreceipt.

Usage:
    cr history <address> [--page-size N] [--seed-hex HEX] [--json]
    cr frames <hex|@file> [--chunk-size N] [--loop]
    cr lookup block:<hash>:tx:<hash> --seed-hex HEX
    cr serve [--host] [--port]
"""
