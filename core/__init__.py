"""Shared configuration for the GOAT MUSIC service."""
