"""对话引擎：失败分类、工具调用循环、审计日志与离线应答。"""
