"""
Entrypoint module, in case you use `python -mlaser_contacts`.
"""

from laser_contacts.cli import main

if __name__ == "__main__":
    main()
