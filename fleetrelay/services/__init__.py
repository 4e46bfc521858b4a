"""Dispatch engine services"""
