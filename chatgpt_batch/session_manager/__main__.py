"""Run the session manager standalone: python -m chatgpt_batch.session_manager"""

from .manager import main

main()
