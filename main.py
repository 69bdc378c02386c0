#!/usr/bin/env python3
"""
Kubescape API Entry Point
"""
from kubescape_api.cli import cli

if __name__ == '__main__':
    cli()
