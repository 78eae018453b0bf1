"""Entities, value objects, fine strategies and billing rules"""
