# backup, restore and plugin reporting for a WAR-mode jenkins server

__version__ = "0.3.0"
