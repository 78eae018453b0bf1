"""Persistence, caching and object wiring"""
