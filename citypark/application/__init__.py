"""Use cases, commands and DTOs"""
