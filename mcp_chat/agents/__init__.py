"""查询编排（ConversationOrchestrator）。"""
