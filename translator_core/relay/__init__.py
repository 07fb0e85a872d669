"""请求中继：消息总线、活动请求登记表与请求协调器。"""
