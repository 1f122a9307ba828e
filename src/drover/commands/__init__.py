"""Built-in command files.

Modules named ``*_commands.py`` below this package are picked up by module-index
discovery; nothing here needs to be registered by hand.
"""
