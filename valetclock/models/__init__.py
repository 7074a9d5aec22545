"""Data models for accounts, sessions and authorization decisions"""
