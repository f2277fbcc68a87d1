"""
Prompt queue: persistent store of deferred prompts and the scheduler that
delivers them once their not-before time has passed.
"""
