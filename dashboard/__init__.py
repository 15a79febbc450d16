"""Evidentia Hub web server (FastAPI application and runner)"""
