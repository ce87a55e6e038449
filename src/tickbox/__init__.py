"""
tickbox - run a directory of numbered step scripts as one workflow.

Steps run sequentially or in bounded parallel batches, their combined
output is streamed live and the run stops at the first failure.
"""

__version__ = "0.1.0"
