"""Formal pipeline invariants.

This file documents what each stage MUST leave on disk once its jobs drain.
Use this file as a reviewer anchor and system reference; the executable
form lives in ``imputepipe.pipeline.stages``.
"""

PIPELINE_INVARIANTS = {
    "preprocess": [
        "{P}_QC.bed, {P}_QC.bim and {P}_QC.fam exist in the working directory",
        "Duplicate variant ids were excluded before missingness filtering",
    ],

    "partition-split": [
        "22 per-chromosome binary sets {P}_CHR{c}.bed/.bim/.fam exist",
        "Each set lives in the working directory or the chromosome folder",
    ],

    "phase": [
        "22 phased haplotype files {P}_CHR{c}.haps exist and are non-empty",
        "Column 3 of the first .haps line is the first marker position in bp",
    ],

    "impute": [
        "Every planned segment CHR{c}_{P}.{i} exists, from the first phased marker to the chromosome end",
        "At least validation.min_segment_outputs segment files exist overall",
        "Segment i covers [i Mb, i+1 Mb) with a fixed flanking buffer",
    ],

    "concatenate": [
        "22 compressed per-chromosome files CHR{c}_{P}.impute.gz exist, each above validation.min_concatenated_bytes",
        "No chromosome is concatenated from an empty segment list",
        "Segments are appended in ascending numeric order",
    ],

    "sort-and-encode": [
        "22 CHR{c}_{P}.bgen files exist, each above validation.min_bgen_bytes",
        "The sample descriptor {P}.sample has 2 header lines plus one per sample",
    ],

    "format-convert": [
        "22 per-chromosome binary sets CHR{c}_{P}.bed/.bim/.fam exist",
    ],

    "merge": [
        "The merged {P}.bed/.bim/.fam exists in the output folder",
    ],
}

# Stages whose absence is acceptable
STAGE_REQUIREMENTS = {
    "preprocess": "OPTIONAL",   # Only when the QC'd set is missing
    "partition-split": "REQUIRED",
    "phase": "REQUIRED",
    "impute": "REQUIRED",
    "concatenate": "REQUIRED",
    "sort-and-encode": "REQUIRED",
    "format-convert": "REQUIRED",
    "merge": "REQUIRED",
    "cleanup": "ALWAYS",        # Runs on success and on failure
}
