"""Command line interface for apm"""
