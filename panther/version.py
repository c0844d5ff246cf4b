"""Panther Meta information.
   Panther lets you edit encrypted files with an ordinary text editor.
"""
__title__ = 'panther'
__description__ = (
   'Panther lets you edit encrypted files with an ordinary '
   'text editor while they stay encrypted at rest.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Panther Developers'
__author__ = 'Panther Developers'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/panther-tools/panther'
