"""Mail2AI Core -- 领域模型、持久化队列与配置"""
