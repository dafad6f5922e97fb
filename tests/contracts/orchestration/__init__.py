"""Orchestration service data contract"""
