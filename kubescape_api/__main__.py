#!/usr/bin/env python3
"""
Command line entry point for the kubescape API
"""
from .cli import cli

if __name__ == "__main__":
    cli()
