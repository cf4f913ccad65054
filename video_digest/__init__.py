"""Video Digest: word-aligned, segmented transcripts for spoken-word video.

WHY: Editors building a video digest need every word of a talk tied to its
position in the audio, grouped into sentences, sections and chapters. The
raw inputs (a video, its caption track or an uploaded transcript) carry none
of that structure.

HOW: Three layers. ``core`` holds pure parsing and data-model code (caption
parsing, transcript cleaning, the word chain). ``tools`` wraps the external
command-line programs (yt-dlp, ffmpeg, the forced aligner, the segmenter).
``pipeline`` drives a digest through its stages and persists it after each
one. The CLI and the HTTP server are thin shells over the pipeline.

RULES:
- core/ does no I/O
- External programs are always invoked with an argument vector, never a
  shell string
- Every stage persists its result before the next stage starts
"""

__version__ = "0.1.0"
