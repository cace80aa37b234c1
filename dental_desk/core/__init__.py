"""Core conversation and scheduling logic."""
