"""
shaderevo - Gemini-driven evolution of shader variants.
"""
