"""Scenarios, completion engine, chat client and voice session controller."""
