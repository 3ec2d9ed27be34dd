"""Markeb Media booking and CRM API"""
