"""
This package contains the conversion pipeline of the Convertor.

A pipeline orchestrates a batch from end to end: it turns paths into jobs
(classification, probing, default settings), hands them to the scheduler, and
records the outcome in the file logs next to the converted files.
"""
