"""
Core package: the state tree, transition descriptors, guards, actions,
resolution and machine definition.
"""
