"""Mail2AI Gateway -- 队列状态查询与手动入队 API"""
