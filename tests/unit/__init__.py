"""Unit tests: domain rules, repositories, configuration and DTOs"""
