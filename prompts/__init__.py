from prompts.manager import get_prompt_template, render_prompt, force_reload_prompts
