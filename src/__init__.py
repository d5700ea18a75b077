"""Crash risk monitor source package"""
