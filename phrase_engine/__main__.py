"""Entry point wrapper for ``python -m phrase_engine``.

Execution is forwarded to :func:`phrase_engine.main` so ``python -m
phrase_engine`` and the installed ``phrase-engine`` console script behave
identically.

Example
-------
::

    python -m phrase_engine --parts "Intro:2,Main A-1:8" --tempo 140 \
        --fill always --output drums.mid
"""

from . import main

if __name__ == "__main__":
    main()
