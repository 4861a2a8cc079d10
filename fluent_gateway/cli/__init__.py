"""Fluent Gateway 命令行工具。"""
