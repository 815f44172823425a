"""
Web Module

FastAPI application exposing classification and taxonomy endpoints.
"""
