"""Agentic triage for newly opened GitHub issues.

This package provides:
- GitHub webhook intake with HMAC signature verification
- GitHub App installation token caching
- A typed GitHub REST client for issues, comments and labels
- A tool registry exposing those operations to a language model
- A bounded agent loop that fetches, labels and summarizes an issue
"""
