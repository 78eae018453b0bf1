"""Integration tests: service, commands and stores working together"""
