"""Pure parsing and data-model modules.

WHY: Caption parsing, transcript cleaning and the word chain are the parts
of the system that can be reasoned about (and tested) without any external
program. Keeping them free of I/O lets the pipeline treat them as plain
functions.

HOW: ir.py defines the dataclasses shared by every layer, captions.py turns
WebVTT cue documents into text and word timings, normalizer.py turns raw
transcripts into speaker-tagged lines for the aligner, word_chain.py links
aligned words for boundary queries.

RULES:
- No file, network or subprocess access in this package
- IR dataclasses are the contract between pipeline stages; change them with care
"""
