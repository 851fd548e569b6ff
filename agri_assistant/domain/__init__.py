"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型与用户输入。
- conversation: 会话回合 Turn 及 ConversationStore 抽象。
- inventory: 设备目录条目与 Inventory 抽象。
- outcomes: 降级链的结果类型。
- exceptions: 业务异常类型定义。
"""
